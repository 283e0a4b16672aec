import multiprocessing as mp

from copilot.config import Config, configure_logging


def main():
    # The overlay display runs in a spawned child; required for frozen builds on Windows
    mp.freeze_support()
    mp.set_start_method("spawn", force=True)

    configure_logging()

    import uvicorn
    uvicorn.run(
        "copilot.main:app",
        host=Config.SERVER_HOST,
        port=Config.SERVER_PORT,
        log_level=Config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
