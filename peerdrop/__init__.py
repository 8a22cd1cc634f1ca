"""
PeerDrop: relay-assisted peer-to-peer sharing of text, passwords and files.
"""

__version__ = "0.1.0"
