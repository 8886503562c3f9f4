from __future__ import annotations

WEB_CLIENT_URL = "https://web.whatsapp.com/"

# Injected helpers are fetched at runtime from whatsapp-web.js (Apache-2.0).
INJECTED_SCRIPTS_BASE = (
    "https://raw.githubusercontent.com/pedroslopez/whatsapp-web.js/main/src/util/Injected"
)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_14_0) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/101.0.4951.67 Safari/537.36"
)
DEFAULT_BROWSER_ARGS = (
    "--disable-blink-features=AutomationControlled",
    "--disable-web-security",
    "--no-sandbox",
)
CHROME_BIN_ENV = "CHROME_BIN"

DEFAULT_SESSION_PATH = "./.wwebjs_auth/session"

# Markers that identify rate-limited or corrupted sessions.
COMPANION_HELLO_MARKER = "CompanionHello"
PAIRING_FAILED_MARKER = "PAIRING_FAILED"
TRANSIENT_ERROR_MARKERS = (COMPANION_HELLO_MARKER, PAIRING_FAILED_MARKER)

INIT_RETRY_BASE_DELAY_S = 15.0
PAIRING_CODE_RETRIES = 3
PAIRING_CODE_RETRY_DELAY_S = 5.0
DEFAULT_PAIRING_CODE_INTERVAL_S = 180.0

POST_LOGOUT_URL_MARKER = "post_logout=1"

DEFAULT_FFMPEG = "ffmpeg"
FFMPEG_BASE_ARGS = ("-y", "-hide_banner", "-loglevel", "error")

WAVEFORM_SAMPLES = 64
WAVEFORM_PCM_RATE_HZ = 16_000

VOICE_MIMETYPE = "audio/ogg; codecs=opus"
VOICE_SAMPLE_RATE_HZ = 48_000
VOICE_BITRATE = "128k"

STICKER_MIMETYPE = "image/webp"
STICKER_SIZE_PX = 512
# Frames are fitted and padded on a 300px canvas before the final resize.
STICKER_CANVAS_PX = 300
STICKER_FPS = 10
STICKER_MAX_DURATION = "00:00:05.0"

# Sticker pack metadata lives under EXIF tag 0x5741 ("AW").
STICKER_EXIF_TAG = 0x5741
STICKER_PACK_ID_LENGTH = 32
