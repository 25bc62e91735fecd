"""Echo Harness

Drives echo-style file transfers between a client and an echo server:
- datagram and stream transports
- flat (IPv4) and hierarchical (XIA-style) addressing
- chunked sends with checkpointed, verified echoes written to a mirror file

Lost datagram checkpoints are tolerated and reported; everything else that
goes wrong ends the run.
"""

__all__ = []
