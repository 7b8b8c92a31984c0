"""Application modules.

- transcoding: Client-side style video transcode pipeline
- media: Upload service and HTTP endpoint
"""
