"""
ImageLens Module Entry Point
=============================

Allows running the ImageLens CLI via: python -m imagelens
"""

from imagelens.cli import main

if __name__ == "__main__":
    main()
