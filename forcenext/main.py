import logging
import time
from typing import Callable, Optional

from selenium.common.exceptions import InvalidSessionIdException, WebDriverException

from forcenext import config
from forcenext.browser import SeleniumHost, driver_alive, load_start_page, start_browser
from forcenext.correlator import ResponseCorrelator
from forcenext.errors import ForceNextError
from forcenext.lifecycle import SessionLifecycleManager
from forcenext.scheduler import Scheduler
from forcenext.settings import CarryOverVolume, load_options, update_option_version


def run_loop(
    driver,
    correlator: ResponseCorrelator,
    scheduler: Scheduler,
    should_stop: Callable[[], bool] = lambda: False,
) -> None:
    """Pump page events and timers until should_stop() or the driver dies."""
    host = SeleniumHost(driver, correlator)
    host.install()
    if not host.wait_for_hook():
        logging.warning("Page hook not ready, continuing with late injection")

    lifecycle = SessionLifecycleManager(host, correlator, scheduler, carry_over=CarryOverVolume())
    lifecycle.start()
    try:
        while not should_stop():
            if host.pump():
                lifecycle.stop("page changed")
                logging.debug(f"Cached entries: {correlator.stats()}")
                correlator.options = load_options()
                host.refresh_hook()
                lifecycle.start()
            scheduler.run_due()

            wait = scheduler.next_due_in()
            time.sleep(config.POLL_INTERVAL if wait is None else min(config.POLL_INTERVAL, wait))
    finally:
        lifecycle.stop("loop finished")


# === MAIN ===
def main() -> None:
    logging.basicConfig(
        format="[ForceNext] %(levelname)s: %(message)s",
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    )
    logging.info("ForceNext is starting...")
    update_option_version()

    options = load_options()
    # caches outlive browser restarts as well as sessions
    correlator = ResponseCorrelator(options)
    scheduler = Scheduler()
    restarts = 0
    driver: Optional[object] = None

    try:
        driver = start_browser()
        if not load_start_page(driver):
            raise ForceNextError("Home page could not be loaded")

        while True:
            try:
                run_loop(driver, correlator, scheduler)
                break
            except (InvalidSessionIdException, WebDriverException) as e:
                if driver_alive(driver):
                    logging.warning(f"WebDriver error: {e}. Resuming...")
                    time.sleep(1.2)
                    continue
                logging.warning(f"Session error: {e}. Restarting browser...")
                try:
                    driver.quit()
                except Exception:
                    pass
                if restarts >= config.MAX_RESTARTS:
                    logging.error("Too many restarts, giving up.")
                    break
                restarts += 1
                driver = start_browser()
                if not load_start_page(driver):
                    logging.error("Restarted, but start page failed.")
                    break
    except KeyboardInterrupt:
        logging.info("Interrupted by user")
    except Exception as e:
        logging.error(f"Fatal: {e}")
    finally:
        try:
            if driver:
                driver.quit()
        except Exception:
            pass
        logging.info("ForceNext finished")


if __name__ == "__main__":
    main()
