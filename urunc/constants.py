"""Fixed values shared across the runtime."""

TIMESTAMP_TARGET_FILE = "/tmp/urunc.zlog"

STATIC_NETWORK_TAP_IP = "172.16.1.1"
STATIC_NETWORK_UNIKERNEL_IP = "172.16.1.2"
# The "X" is replaced with the index of the tap device.
DYNAMIC_NETWORK_TAP_IP = "172.16.X.2"
QUEUE_PROXY_REDIRECT_IP = "172.16.1.2"