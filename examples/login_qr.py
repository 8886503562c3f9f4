"""
Link a device and wait until the session is ready.

    python examples/login_qr.py                 # scan a QR code
    python examples/login_qr.py --phone 5511... # enter a numeric pairing code
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
from pathlib import Path

from pywweb import ConnectionState, DisconnectReason, SessionController, SessionOptions


async def main() -> None:
    ap = argparse.ArgumentParser(prog="login_qr.py")
    ap.add_argument(
        "--session", default="./.wwebjs_auth/session", help="browser profile directory"
    )
    ap.add_argument("--phone", help="pair with a numeric code sent to this phone number")
    ap.add_argument("--show", action="store_true", help="run the browser with a window")
    ap.add_argument("--no-qr-file", action="store_true", help="don't write QR to <session>/qr.svg")
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(message)s")

    session_dir = Path(args.session).expanduser().resolve()
    options = SessionOptions(
        session_path=str(session_dir),
        pair_with_phone_number=args.phone,
        headless=not args.show,
    )

    def on_qr(qr: str) -> None:
        print("\nScan this QR in WhatsApp -> Settings -> Linked devices -> Link a device\n")
        with contextlib.suppress(Exception):
            import qrcode  # optional extra

            if not args.no_qr_file:
                from qrcode.image.svg import SvgImage

                svg_path = session_dir / "qr.svg"
                img = qrcode.make(qr, image_factory=SvgImage)
                svg_path.write_bytes(img.to_string())
                print(f"wrote {svg_path}")

            code = qrcode.QRCode(border=1)
            code.add_data(qr)
            code.make(fit=True)
            code.print_ascii(invert=True)
            return

        print("QR string:", qr)

    def on_code(code: str) -> None:
        print(f"\nEnter this code in WhatsApp -> Linked devices -> Link with phone number: {code}\n")

    def on_state(state: ConnectionState) -> None:
        print("state:", state.value)

    def on_progress(percent: int) -> None:
        print(f"loading messages: {percent}%")

    def on_disconnected(reason: DisconnectReason) -> None:
        print("disconnected:", reason.value)

    async with SessionController(options) as session:
        session.on("qr", on_qr).on("code", on_code)
        session.on("auth_state_changed", on_state)
        session.on("loading_progress", on_progress)
        session.on("disconnected", on_disconnected)

        await session.initialize()
        print("ready")

        await asyncio.Event().wait()


if __name__ == "__main__":
    asyncio.run(main())
