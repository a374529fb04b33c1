"""
memsync: incremental sync of local conversation logs and memory notes to a
remote memory index, plus recall over what has been indexed.
"""

__version__ = "2.1.0"
