"""ParcelBot: BDI agents for grid-world parcel delivery."""

try:
    from importlib.metadata import version as _pkg_version

    __version__ = _pkg_version("parcelbot")
except Exception:
    __version__ = "0.1.0"  # fallback

__all__ = ["__version__"]
