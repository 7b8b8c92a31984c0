"""Portfolio Media Backend.

Accepts portfolio video uploads, re-encodes them into a web-friendly
container, and stores them for public delivery.

Modules:
    - core: Configuration, logging, tracing, metrics, storage
    - modules.transcoding: Probe, geometry, encoder selection, frame pump
    - modules.media: Upload service and API router
"""

__version__ = "0.1.0"
