from __future__ import annotations

MIN_ELAPSED_SECONDS = 0.001

BIT_RATE_UNITS = ("bps", "kbps", "Mbps", "Gbps", "Tbps")
BYTE_RATE_UNITS = ("B/s", "kB/s", "MB/s", "GB/s", "TB/s")
IEC_BIT_RATE_UNITS = ("bps", "Kibps", "Mibps", "Gibps", "Tibps")
IEC_BYTE_RATE_UNITS = ("B/s", "KiB/s", "MiB/s", "GiB/s", "TiB/s")

SI_TOTAL_UNITS = ("B", "kB", "MB", "GB", "TB")
IEC_TOTAL_UNITS = ("B", "KiB", "MiB", "GiB", "TiB")


def scale(value: float, divisor: float, units: tuple[str, ...]) -> str:
    """Divide down the unit ladder; 0 decimals for the two smallest units."""
    idx = 0
    while value >= divisor and idx < len(units) - 1:
        value /= divisor
        idx += 1
    if idx <= 1:
        return f"{value:.0f} {units[idx]}"
    return f"{value:.2f} {units[idx]}"


def rate_units(show_bits: bool, use_si: bool, iec_labels: bool = False) -> tuple[str, ...]:
    # Binary scaling keeps the decimal-style labels unless asked otherwise.
    if iec_labels and not use_si:
        return IEC_BIT_RATE_UNITS if show_bits else IEC_BYTE_RATE_UNITS
    return BIT_RATE_UNITS if show_bits else BYTE_RATE_UNITS


def format_rate(
    delta_bytes: float,
    elapsed_seconds: float,
    show_bits: bool,
    use_si: bool,
    iec_labels: bool = False,
) -> str:
    elapsed = max(MIN_ELAPSED_SECONDS, float(elapsed_seconds))
    value = float(delta_bytes) * (8.0 if show_bits else 1.0) / elapsed
    divisor = 1000.0 if use_si else 1024.0
    return scale(value, divisor, rate_units(show_bits, use_si, iec_labels))


def format_total(total_bytes: int, use_si: bool) -> str:
    divisor = 1000.0 if use_si else 1024.0
    return scale(float(total_bytes), divisor, SI_TOTAL_UNITS if use_si else IEC_TOTAL_UNITS)


def format_peak(bytes_per_second: float, show_bits: bool, use_si: bool, iec_labels: bool = False) -> str:
    # peaks are shown as whole bytes over one second
    return format_rate(int(bytes_per_second), 1.0, show_bits, use_si, iec_labels)
