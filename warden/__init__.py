"""
Warden -- Application Bundle Entitlement Extractor
====================================================

Warden reads the code-signature entitlements embedded in the native
executable of an application bundle.  Bundles may be expanded folders
(``.app``) or zip archives (``.zip``, ``.ipa``); bare Mach-O files are
accepted too.

Capabilities:
    - Uniform directory and zip storage, with synthesized directories
    - Bundle layout resolution (macOS, iOS, ``Payload/`` and ``Wrapper/``)
    - Single-architecture and fat (universal) Mach-O parsing
    - Code-signature superblob walking
    - Entitlement plist decoding
    - Batch analysis, Rich console output and JSON reports

References:
    - Apple. mach-o/loader.h, mach-o/fat.h (cctools).
    - Apple. osfmk/kern/cs_blobs.h (XNU).
    - Levin, J. (2017). *OS Internals, Volume III: Security & Insecurity.
"""

__version__ = "1.0.0"
__all__ = [
    "AppBundle",
    "WardenEngine",
    "WardenConsoleOutput",
    "WardenReportGenerator",
]
