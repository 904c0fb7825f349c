"""Host adapters.

- commands: External command execution
- platform: OS, distribution and package manager detection
- packages: Package manager installs
- settings_store: dconf settings store and color conversion
"""
