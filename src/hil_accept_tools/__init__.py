"""
HIL Accept Tools - Hardware-in-the-loop acceptance testing for serial/USB devices

This package drives a physical device under test and asserts on its output.
It includes:

- **Named serial channels** opened from environment-configured device paths
- **Blocking output checks** that wait until a predicate holds over the data
  received so far, reporting the most recent mismatch on timeout
- **A single background I/O scheduler** that delivers incoming bytes for all
  channels, with an explicit start/stop lifecycle
- **USB control requests** sent through an external transfer tool
- **Application build trigger** and scenario setup/teardown helpers

Device paths are resolved from environment variables when a channel is
opened, never at import time.
"""

import logging

logging.getLogger("hil_accept_tools").addHandler(logging.NullHandler())

__version__ = "0.1.0"

# Serial channel name -> environment variable holding its device path.
# On Linux these are /dev/ttyUSB*, /dev/ttyACM* paths; on Windows COMx.
DEFAULT_SERIAL_CHANNELS = {
    "Serial": "HIL_SERIAL_DEV",
    "Serial1": "HIL_SERIAL1_DEV",
    "USBSerial1": "HIL_USB_SERIAL1_DEV",
}

# Serial line settings
SERIAL_BAUD_RATE = 9600
SERIAL_BYTESIZE = 8       # 8 data bits
SERIAL_PARITY = "N"       # No parity
SERIAL_STOPBITS = 1       # 1 stop bit
SERIAL_READ_TIMEOUT = 0   # non-blocking; timing managed by the scheduler
SERIAL_WRITE_TIMEOUT = 10  # seconds, blocking with failsafe

# I/O scheduler poll granularity (10 ms)
SCHEDULER_POLL_INTERVAL_S = 0.01
SCHEDULER_JOIN_TIMEOUT_S = 5.0

# Default time an output check waits for its predicate to hold
CHECK_DATA_TIMEOUT_S = 3.0

# Time given to the device to boot into a freshly flashed application
APP_BOOT_DELAY_S = 2.0

# External tools
BUILD_COMMAND = "make_app"
USB_REQUEST_COMMAND = "send_usb_req"

# USB control request defaults
USB_DEFAULT_REQUEST = 80        # reserved for vendor test requests
USB_DEFAULT_REQUEST_VALUE = 0
USB_DEFAULT_REQUEST_INDEX = 60  # test request index
