import argparse
import logging
import os


def main():
    parser = argparse.ArgumentParser(description='SoundStats API Server')
    parser.add_argument('--host', default='127.0.0.1', help='Host to bind to')
    parser.add_argument('--port', type=int, default=8000, help='Port to bind to')
    parser.add_argument('--reload', action='store_true', help='Enable auto-reload')
    parser.add_argument('--log-level', default='info', help='Uvicorn log level')
    parser.add_argument(
        '--store',
        choices=['sqlite', 'postgres', 'memory'],
        help='Listening store backend (overrides settings)',
    )
    args = parser.parse_args()

    if args.store:
        os.environ["SOUNDSTATS_STORE"] = args.store

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    import uvicorn

    uvicorn.run(
        "soundstats.api.app:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        reload=args.reload,
    )

if __name__ == "__main__":
    main()
