"""Transcoding module.

Re-encodes uploaded videos into a bounded-size, bounded-bitrate web
container using a frame-pump pipeline over ffmpeg.
"""
