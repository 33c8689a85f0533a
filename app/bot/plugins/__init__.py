"""Built-in command plugins, loaded by file from this directory."""
