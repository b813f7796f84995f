SETTINGS = {
    "logging": {"level": "DEBUG"},
    "CSRF": {"ENABLED": True},
}
