"""Host-side building blocks for loading firmware into ESP chips: types, port, images and workflows."""

__version__ = "0.1.0"