"""thoughtcast -- Live AI terminal broadcast engine.

Generated text is typed out character by character into a scrollback
buffer, fanned out in real time to every connected viewer, and
optionally rendered into frames that feed an external encoder process
pushing a live stream to a broadcast ingest endpoint.
"""

__version__ = "0.1.0"
