# port.py

import asyncio

from abc import ABC, abstractmethod

import serial
import serial.tools.list_ports

from gammamca.shared import TransportError, logger

FTDI_VID = 0x0403
# Forms the FTDI vendor id takes in a pyserial hwid string across platforms
FTDI_HWID_MARKERS = ("VID_0403", "VID:PID=0403", "0403:")

READ_BUFFER = 16384


class Transport(ABC):
    """Byte link to the detector. One instance per physical port."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        ...

    @abstractmethod
    async def open(self, baud_rate: int) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the link. Must be idempotent and never raise."""

    @abstractmethod
    async def read(self) -> bytes:
        """Return the next chunk of bytes, or b'' if nothing arrived before the idle timeout."""

    @abstractmethod
    async def write(self, data: bytes) -> None:
        ...

    @abstractmethod
    def get_info(self) -> str:
        ...

    @abstractmethod
    def is_this_port(self, handle) -> bool:
        ...

    async def send_string(self, value: str) -> None:
        if not self.is_open:
            return
        await self.write((value.strip() + "\n").encode("ascii", errors="replace"))


def _upper_attr(info, name):
    return (getattr(info, name, "") or "").upper()


def _is_ftdi_like(info) -> bool:
    """Match a ListPortInfo against the FTDI bridge on the detector board."""
    if getattr(info, "vid", None) == FTDI_VID:
        return True

    hwid = _upper_attr(info, "hwid")
    if any(marker in hwid for marker in FTDI_HWID_MARKERS):
        return True

    return any("FTDI" in _upper_attr(info, name) for name in ("manufacturer", "description"))


def get_all_ports(ftdi_only=True):
    """Only FTDI ports when any are present, otherwise every serial port."""
    ports = list(serial.tools.list_ports.comports())
    if not ftdi_only:
        return ports

    bridges = [info for info in ports if _is_ftdi_like(info)]
    return bridges or ports


def get_port_by_serial_number(sn):
    for port in get_all_ports():
        if port.serial_number == sn:
            return port
    return None


class SerialTransport(Transport):
    """Native serial port driven through pyserial.

    pyserial only offers blocking calls, so every call that may wait on the
    device runs in a worker thread and the event loop merely suspends.
    """

    def __init__(self, port, timeout=0.1):
        # port is either a device path ("COM7", "/dev/ttyUSB0") or a ListPortInfo
        self.port = port
        self.device = getattr(port, "device", port)
        self.timeout = timeout
        self._serial = None

    def __repr__(self):
        return f"SerialTransport({self.device!r})"

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    async def open(self, baud_rate: int) -> None:
        if self.is_open:
            return
        try:
            self._serial = await asyncio.to_thread(
                serial.Serial,
                self.device,
                baudrate=baud_rate,
                bytesize=8,
                parity='N',
                stopbits=1,
                timeout=self.timeout,
            )
        except (serial.SerialException, OSError, ValueError) as e:
            logger.error(f"❌ Failed to open serial port {self.device}: {e}")
            raise TransportError(f"Failed to open serial port {self.device}: {e}") from e

        self._serial.reset_input_buffer()
        logger.info(f"   ✅ Serial port {self.device} open at {baud_rate} baud")

    async def close(self) -> None:
        tty, self._serial = self._serial, None
        if tty is None:
            return
        try:
            await asyncio.to_thread(tty.close)
        except (serial.SerialException, OSError) as e:
            # Sudden device disconnect can cause this
            logger.warning(f"👆 Nothing to disconnect on {self.device}: {e}")
        else:
            logger.info(f"   ✅ Serial port {self.device} closed")

    async def read(self) -> bytes:
        tty = self._serial
        if tty is None or not tty.is_open:
            return b""
        try:
            # blocking read with timeout; returns b'' on timeout
            return await asyncio.to_thread(tty.read, READ_BUFFER)
        except (serial.SerialException, OSError) as e:
            logger.warning(f"👆 Serial read failed (likely disconnected or busy): {e}")
            raise TransportError(str(e)) from e

    async def write(self, data: bytes) -> None:
        tty = self._serial
        if tty is None:
            raise TransportError(f"Port {self.device} is not writable!")
        try:
            await asyncio.to_thread(tty.write, data)
        except (serial.SerialException, OSError) as e:
            logger.error(f"❌ Failed to write to {self.device}: {e}")
            raise TransportError(str(e)) from e

    def get_info(self) -> str:
        pid = getattr(self.port, "pid", None)
        if pid is not None:
            return f"Id: 0x{pid:x}"
        return str(self.device)

    def is_this_port(self, handle) -> bool:
        return handle is self.port or getattr(handle, "device", handle) == self.device


def list_transports(ftdi_only=True):
    """Every attached device wrapped in a transport.

    USB bridges driven through pyusb are only offered when the OS exposes no
    serial port at all, since a bridge with a loaded driver shows up as both.
    """
    transports = [SerialTransport(p) for p in get_all_ports(ftdi_only=ftdi_only)]
    if transports:
        return transports

    from gammamca.usbport import UsbSerialTransport, get_usb_devices

    return [UsbSerialTransport(dev) for dev in get_usb_devices()]
