"""Closed-form MOS estimators.

Audio follows a simplified ITU-T G.107 E-model:

    delay            = 20 + buffer_delay + rtt / 2
    Ie (equipment)   = 8 for DTX, else clamp(55 - 4.6 ln(bitrate), 0, 30),
                       or 6 when the bitrate is unknown
    Ipl (packet loss)= Ie + (100 - Ie) * loss / (loss + Bpl),  Bpl = 20 with FEC, else 10
    R                = clamp(100 - Ipl - delay_impairment, 0, 100)
    MOS              = 1 + 0.035 R + 7e-6 R (R - 60) (100 - R)

Video uses a bits-per-pixel-per-frame log curve, penalised for a frame
rate below the expected one and for delay.
"""

from __future__ import annotations

import math
from typing import Optional


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def calculate_audio_mos(
    bitrate: Optional[float],
    packet_loss: float,
    buffer_delay_in_ms: float,
    round_trip_time_in_ms: float,
    dtx: bool = False,
    fec: bool = False,
) -> float:
    """Audio MOS in [1, 5].  *packet_loss* is a percentage (0..100)."""
    delay = 20 + buffer_delay_in_ms + round_trip_time_in_ms / 2

    if dtx:
        equipment_impairment = 8.0
    elif bitrate:
        equipment_impairment = _clamp(55 - 4.6 * math.log(bitrate), 0, 30)
    else:
        equipment_impairment = 6.0

    bpl = 20 if fec else 10
    if packet_loss > 0:
        ipl = equipment_impairment + (100 - equipment_impairment) * (packet_loss / (packet_loss + bpl))
    else:
        ipl = equipment_impairment

    delay_impairment = delay * 0.03 + (0.1 * delay - 150 if delay > 150 else 0)
    r = _clamp(100 - ipl - delay_impairment, 0, 100)
    mos = 1 + 0.035 * r + (r * (r - 60) * (100 - r) * 7) / 1_000_000
    return _clamp(round(mos * 100) / 100, 1, 5)


def calculate_video_mos(
    bitrate: float,
    width: int,
    height: int,
    buffer_delay_in_ms: float,
    round_trip_time_in_ms: float,
    codec: Optional[str],
    frame_rate: float,
    expected_frame_rate: float,
) -> float:
    """Video MOS in [1, 5]."""
    codec_factor = 1.2 if codec == "vp9" else 1.0
    delay = buffer_delay_in_ms + round_trip_time_in_ms / 2
    pixels = width * height

    if frame_rate < 1 or pixels <= 0 or bitrate <= 0:
        return 1.0

    bits_per_pixel_per_frame = (codec_factor * bitrate) / pixels / frame_rate
    base = _clamp(0.56 * math.log(bits_per_pixel_per_frame) + 5.36, 1, 5)
    mos = base - 1.9 * math.log(expected_frame_rate / frame_rate) - delay * 0.002
    return _clamp(round(mos, 2), 1, 5)
