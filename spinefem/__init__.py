"""spinefem: finite elements on meshes whose geometry is part of the unknowns."""
__version__ = "0.1.0"
