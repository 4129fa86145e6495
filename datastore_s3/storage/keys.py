"""
Key Codec: Datastore Keys <-> Physical Object Names

A physical object name is the configured root path followed by the
key's string form:

    root ".ipfs/datastore" + Key("/z/key")  ->  ".ipfs/datastore/z/key"
    root ""                + Key("/z/key")  ->  "/z/key"

Invariant:
    The root is normalized once, at construction: runs of separators are
    collapsed and trailing separators removed. Encoding always inserts a
    separator between root and key, decoding strips exactly len(root)
    characters, so decode_key(full_key(k)) == k for every normalized key.
"""

from __future__ import annotations

from typing import Optional, Union

from datastore_s3.core.types import KEY_SEPARATOR, Key, collapse_separators


def normalize_root(root: Optional[str]) -> str:
    """Collapse doubled separators and drop trailing ones ("/" -> "")."""
    if not root:
        return ""
    return collapse_separators(root).rstrip(KEY_SEPARATOR)


class KeyCodec:
    """
    Maps datastore keys to object names under a fixed root.

    Example:
        >>> codec = KeyCodec(".ipfs/datastore/")
        >>> codec.full_key(Key("/z/key"))
        '.ipfs/datastore/z/key'
        >>> codec.decode_key(".ipfs/datastore/z/key")
        Key('/z/key')
    """

    __slots__ = ("_root",)

    def __init__(self, root: Optional[str] = "") -> None:
        self._root = normalize_root(root)

    @property
    def root(self) -> str:
        """Normalized root path ("" when objects live at the bucket root)."""
        return self._root

    def full_key(self, key: Union[Key, str]) -> str:
        """Physical object name for ``key``; never contains "//"."""
        return collapse_separators(f"{self._root}{KEY_SEPARATOR}{key}")

    def decode_key(self, name: str) -> Key:
        """
        Key for a physical object name produced by :meth:`full_key`.

        The remainder after the root is kept verbatim (leading separator
        included), so no normalization is applied.

        Raises:
            ValueError: If ``name`` does not fall under the root.
        """
        if not self.owns(name):
            raise ValueError(f"Object name {name!r} is outside root {self._root!r}")
        return Key(name[len(self._root):], clean=False)

    def owns(self, name: str) -> bool:
        """Whether ``name`` lies under the root (and not on it)."""
        return name.startswith(self._root + KEY_SEPARATOR)

    def query_prefix(self, prefix: Optional[str] = None) -> str:
        """
        Physical listing prefix for a logical key prefix.

        Without a logical prefix the whole root is listed. A trailing
        separator on the logical prefix is preserved so "/a/" does not
        match "/ab".
        """
        if not prefix:
            return self._root + KEY_SEPARATOR if self._root else ""
        return collapse_separators(f"{self._root}{KEY_SEPARATOR}{prefix}")

    def __repr__(self) -> str:
        return f"KeyCodec(root={self._root!r})"
