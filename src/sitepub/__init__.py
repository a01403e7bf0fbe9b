"""sitepub: static site build-and-publish pipeline"""

__version__ = "0.1.0"
