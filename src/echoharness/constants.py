from __future__ import annotations

FILE_SUFFIX = "_echo"

RECV_TIMEOUT_S = 2.0
COPY_BUFFER_SIZE = 2048
ADDR_FILE_MAX = 4 * 1024

XIA_NODES_MAX = 9
XID_LEN = 20
XIDTYPE_NAT = 0

DEFAULT_CHUNK_SIZE = 1024
DEFAULT_CHECKPOINT_INTERVAL = 1

OVERLAY_VERSION = 1
