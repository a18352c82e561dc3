"""Built-in plugins.

Every module in this package is imported by the plugin registry; plugin
classes defined in it are registered before user plugins.
"""
