"""auth/ -- Authentication package for CropCase.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/, plans/, or client/.
api/ imports from auth/, not the other way around.
"""
