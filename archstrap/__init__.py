# archstrap/__init__.py

# Versioning
__version__ = "0.1.0"
