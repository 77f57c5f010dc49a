# __main__.py
"""Command-line recorder: python -m gammamca --port /dev/ttyUSB0 --seconds 60"""

import argparse
import asyncio
import json
import sys

from gammamca.calibration import Calibration
from gammamca.dispatcher import SerialManager
from gammamca.functions import get_record_timestamp
from gammamca.peaks import PEAK_MODES
from gammamca.plot import SpectrumPlot
from gammamca.port import SerialTransport, get_all_ports, list_transports
from gammamca.shared import (
    ORDER_TYPES,
    GammaMcaError,
    Settings,
    __version__,
    init_logging,
    load_settings,
    logger,
)
from gammamca.spectrum import SpectrumData


def parse_cal_point(text):
    try:
        channel, energy = text.split(":", 1)
        return float(channel), float(energy)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected CH:E, got {text!r}") from None


def load_isotopes(path):
    with open(path, "r", encoding="utf-8") as f:
        raw = json.load(f)
    return {float(energy): str(name) for energy, name in raw.items()}


def build_parser():
    ap = argparse.ArgumentParser(prog="gammamca", description="Record a gamma spectrum from a serial MCA.")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("--list", action="store_true", help="List available ports and exit.")
    ap.add_argument("--port", help="Serial device, or 'usb' for a bridge without a serial driver.")
    ap.add_argument("--baud", type=int, help="Baud rate.")
    ap.add_argument("--mode", choices=ORDER_TYPES, help="Wire format sent by the device.")
    ap.add_argument("--channels", type=int, help="Number of ADC channels.")
    ap.add_argument("--seconds", type=float, default=10.0, help="Recording duration.")
    ap.add_argument("--refresh", type=float, help="Seconds between spectrum updates.")
    ap.add_argument("--config", help="JSON settings file.")
    ap.add_argument("--cal", type=parse_cal_point, action="append", default=[],
                    help="Calibration point CH:E, give 2 or 3.")
    ap.add_argument("--peaks", choices=PEAK_MODES, help="Detect peaks and label them.")
    ap.add_argument("--isotopes", help="JSON file mapping energy to isotope name.")
    ap.add_argument("--log-dir", help="Directory for the log file.")
    return ap


def apply_overrides(settings, args):
    overrides = {
        "baud_rate": args.baud,
        "order_type": args.mode,
        "adc_channels": args.channels,
        "refresh_rate": args.refresh,
    }
    ok = True
    for key, value in overrides.items():
        if value is not None and not settings.update(key, value):
            print(f"Invalid value for {key}: {value}", file=sys.stderr)
            ok = False
    return ok


def pick_transport(port):
    if port is None:
        transports = list_transports()
        return transports[0] if transports else None

    if port.lower() == "usb":
        from gammamca.usbport import UsbSerialTransport
        return UsbSerialTransport()

    return SerialTransport(port)


async def record(manager, spectrum, seconds, refresh_rate):
    await manager.start_record()
    try:
        elapsed = 0.0
        while manager.recording and elapsed < seconds:
            await asyncio.sleep(refresh_rate)
            elapsed += refresh_rate

            cps = manager.refresh(spectrum)
            print(f"\r{get_record_timestamp(manager.get_time())}  {cps:8.1f} cps", end="", flush=True)

            if manager.max_time_reached():
                logger.info("   ✅ Maximum recording time reached")
                break
    finally:
        await manager.stop_record()
        manager.refresh(spectrum)
        print()


def print_summary(manager, spectrum, plot):
    mean, std = manager.cps_stats()
    print(f"Total counts: {spectrum.get_total_counts('data')}")
    print(f"Live time:    {get_record_timestamp(manager.get_time())}")
    print(f"Count rate:   {mean:.1f} ± {std:.1f} cps")

    if manager.disconnected:
        print("Device disconnected during recording.")

    if plot.peak_config.enabled:
        plot_data = plot.plot_data(spectrum)
        unit = "keV" if plot_data.calibrated else "ch"
        for anno in plot_data.annotations:
            print(f"Peak {anno['x']:>10.2f} {unit}  {anno['text']}")


def main(argv=None):
    args = build_parser().parse_args(argv)

    if args.list:
        for p in get_all_ports(ftdi_only=False):
            print(f"{p.device}\t{p.description}")
        return 0

    init_logging(args.log_dir)

    settings = load_settings(args.config) if args.config else Settings()
    if not apply_overrides(settings, args):
        return 2

    calibration = Calibration()
    if args.cal and not calibration.apply(args.cal):
        print("Calibration needs 2 or 3 points with distinct channels.", file=sys.stderr)
        return 2

    iso_list = {}
    if args.isotopes:
        try:
            iso_list = load_isotopes(args.isotopes)
        except (OSError, ValueError, AttributeError) as e:
            print(f"Cannot read isotope table: {e}", file=sys.stderr)
            return 2

    plot = SpectrumPlot.from_settings(settings, calibration=calibration, iso_list=iso_list)
    if args.peaks:
        plot.peak_config.enabled = True
        plot.peak_config.mode = args.peaks

    transport = pick_transport(args.port)
    if transport is None:
        print("No device found.", file=sys.stderr)
        return 1

    manager = SerialManager(transport, settings)
    spectrum = SpectrumData()

    try:
        asyncio.run(record(manager, spectrum, args.seconds, settings.refresh_rate))
    except GammaMcaError as e:
        print(f"Recording failed: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print()

    print_summary(manager, spectrum, plot)
    return 0


if __name__ == "__main__":
    sys.exit(main())
