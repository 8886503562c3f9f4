"""
Send a file from an already linked session.

    python examples/send_media.py 5511999999999 ./note.mp3 --voice
    python examples/send_media.py 5511999999999 ./clip.mp4 --sticker --name Pack --author Me
"""

from __future__ import annotations

import argparse
import asyncio
import logging

from pywweb import MediaSendOptions, MessageMedia, SessionController, SessionOptions


async def main() -> None:
    ap = argparse.ArgumentParser(prog="send_media.py")
    ap.add_argument("chat", help="phone number or chat id")
    ap.add_argument("path", help="file (or http(s) URL) to send")
    ap.add_argument("--session", default="./.wwebjs_auth/session")
    ap.add_argument("--caption")
    ap.add_argument("--voice", action="store_true", help="send audio as a voice note")
    ap.add_argument("--sticker", action="store_true", help="send image/video as a sticker")
    ap.add_argument("--document", action="store_true", help="send as a document")
    ap.add_argument("--name", help="sticker pack name")
    ap.add_argument("--author", help="sticker pack author")
    ap.add_argument("--ffmpeg", help="ffmpeg binary (default: ffmpeg on PATH)")
    args = ap.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(message)s")

    if args.path.startswith(("http://", "https://")):
        media = await MessageMedia.from_url(args.path)
    else:
        media = MessageMedia.from_file_path(args.path)

    opts = MediaSendOptions(
        caption=args.caption,
        send_audio_as_voice=args.voice,
        send_media_as_sticker=args.sticker,
        send_media_as_document=args.document,
        sticker_name=args.name,
        sticker_author=args.author,
    )

    options = SessionOptions(session_path=args.session, ffmpeg_path=args.ffmpeg)
    async with SessionController(options) as session:
        await session.initialize()
        msg_id = await session.send_message(args.chat, media=media, options=opts)
        print("sent:", msg_id)


if __name__ == "__main__":
    asyncio.run(main())
