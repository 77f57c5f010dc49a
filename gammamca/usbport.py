# usbport.py
"""USB-UART bridge transport talking to an FTDI FT-X chip through pyusb.

Used where the operating system exposes no serial device for the detector
(no driver, or the driver is detached). The bridge is configured with the
same vendor requests the FTDI kernel driver issues.
"""

import asyncio

import usb.core
import usb.util

from gammamca.port import Transport
from gammamca.shared import TransportError, logger

DEVICE_FILTERS = [{"idVendor": 0x0403, "idProduct": 0x6015}]

# FTDI vendor requests
SIO_RESET = 0
SIO_SET_FLOW_CTRL = 2
SIO_SET_BAUDRATE = 3
SIO_SET_DATA = 4

SIO_RESET_SIO = 0
SIO_DISABLE_FLOW_CTRL = 0x0
DATA_8N1 = 0x0008

REQ_OUT = usb.util.CTRL_OUT | usb.util.CTRL_TYPE_VENDOR | usb.util.CTRL_RECIPIENT_DEVICE

EP_IN = 0x81
EP_OUT = 0x02
PACKET_SIZE = 64
STATUS_BYTES = 2

_FRAC_CODE = (0, 3, 2, 4, 1, 5, 6, 7)


def baud_divisor(baud_rate):
    """Encode a baud rate into the (wValue, wIndex) pair of SIO_SET_BAUDRATE.

    FT-X chips derive the rate from a 3 MHz clock with a divisor that has
    a 3 bit fractional part.
    """
    if baud_rate <= 0:
        raise ValueError("baud rate must be positive")

    eighths = int(round(3_000_000 * 8 / baud_rate))
    if eighths <= 8:
        encoded = 0           # 3 Mbaud
    elif eighths <= 12:
        encoded = 1           # 2 Mbaud
    else:
        eighths = min(eighths, 0x3FFF * 8 + 7)
        encoded = (eighths >> 3) | (_FRAC_CODE[eighths & 7] << 14)

    return encoded & 0xFFFF, (encoded >> 16) & 0xFFFF


def strip_status(raw):
    """Drop the two modem status bytes heading every 64 byte bulk packet."""
    data = bytearray()
    for start in range(0, len(raw), PACKET_SIZE):
        data += bytes(raw[start + STATUS_BYTES:start + PACKET_SIZE])
    return bytes(data)


def get_usb_devices():
    devices = []
    for flt in DEVICE_FILTERS:
        try:
            devices.extend(usb.core.find(find_all=True, **flt))
        except usb.core.NoBackendError as e:
            logger.warning(f"👆 No libusb backend available: {e}")
            return []
    return devices


class UsbSerialTransport(Transport):

    def __init__(self, device=None, interface=0, timeout=0.1):
        self.device = device
        self.interface = interface
        self.timeout = timeout
        self._index = interface + 1
        self._is_open = False

    def __repr__(self):
        return f"UsbSerialTransport({self.get_info()!r})"

    @property
    def is_open(self) -> bool:
        return self._is_open

    def _control(self, request, value, index=None):
        index = self._index if index is None else index
        self.device.ctrl_transfer(REQ_OUT, request, value, index, None)

    def _setup(self, baud_rate):
        if self.device is None:
            self.device = usb.core.find(**DEVICE_FILTERS[0])
            if self.device is None:
                raise TransportError("No USB serial bridge found")

        try:
            if self.device.is_kernel_driver_active(self.interface):
                self.device.detach_kernel_driver(self.interface)
        except NotImplementedError:
            pass  # not supported on this backend (Windows)

        self.device.set_configuration()
        usb.util.claim_interface(self.device, self.interface)

        value, index = baud_divisor(baud_rate)
        self._control(SIO_RESET, SIO_RESET_SIO)
        self._control(SIO_SET_FLOW_CTRL, SIO_DISABLE_FLOW_CTRL)
        self._control(SIO_SET_DATA, DATA_8N1)
        # single interface chips take the high divisor bit as the whole wIndex
        self._control(SIO_SET_BAUDRATE, value, index)

    async def open(self, baud_rate: int) -> None:
        if self._is_open:
            return
        try:
            await asyncio.to_thread(self._setup, baud_rate)
        except (usb.core.USBError, ValueError) as e:
            logger.error(f"❌ Failed to open USB bridge: {e}")
            raise TransportError(f"Failed to open USB bridge: {e}") from e

        self._is_open = True
        logger.info(f"   ✅ USB bridge {self.get_info()} open at {baud_rate} baud")

    async def close(self) -> None:
        if not self._is_open:
            return
        self._is_open = False
        try:
            usb.util.release_interface(self.device, self.interface)
            usb.util.dispose_resources(self.device)
        except usb.core.USBError as e:
            logger.warning(f"👆 Nothing to disconnect on USB bridge: {e}")

    def _read_packet(self):
        try:
            raw = self.device.read(EP_IN, 4096, int(self.timeout * 1000))
        except usb.core.USBTimeoutError:
            return b""
        return strip_status(raw)

    async def read(self) -> bytes:
        if not self._is_open:
            return b""
        try:
            return await asyncio.to_thread(self._read_packet)
        except usb.core.USBError as e:
            logger.warning(f"👆 Error receiving data: {e}")
            raise TransportError(str(e)) from e

    async def write(self, data: bytes) -> None:
        if not self._is_open:
            raise TransportError("USB bridge is not open")
        try:
            await asyncio.to_thread(self.device.write, EP_OUT, data, int(self.timeout * 1000))
        except usb.core.USBError as e:
            logger.error(f"❌ Failed to write to USB bridge: {e}")
            raise TransportError(str(e)) from e

    def get_info(self) -> str:
        if self.device is None:
            return "USB"
        return f"USB {self.device.idVendor:04x}:{self.device.idProduct:04x}"

    def is_this_port(self, handle) -> bool:
        return self.device is not None and handle is self.device
