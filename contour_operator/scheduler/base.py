"""
Module for the ThreadBase Class
"""

# Standard
from typing import Optional
import threading

# First Party
import alog

# Local
from .leader_election import AlwaysLeaderManager, LeadershipManagerBase

log = alog.use_channel("TRDUTLS")


class ThreadBase(threading.Thread):
    """Base class for all other thread classes. This class handles generic
    starting, stopping, and leadership functions
    """

    def __init__(
        self,
        name: Optional[str] = None,
        daemon: Optional[bool] = None,
        leadership_manager: Optional[LeadershipManagerBase] = None,
    ):
        """Initialize class and store required instance variables. This
        function is normally overridden by subclasses that pass in static
        name/daemon variables

        Args:
            name:  Optional[str]
                The name of the thread
            daemon:  Optional[bool]
                Whether python should wait for this thread to stop before
                exiting
            leadership_manager:  Optional[LeadershipManagerBase]
                The leadership manager for tracking elections
        """
        self.leadership_manager = leadership_manager or AlwaysLeaderManager()
        self.shutdown = threading.Event()
        super().__init__(name=name, daemon=daemon)

    ## Abstract Interface ######################################################

    def run(self):
        """Control loop for the thread. Once this function exits the thread
        stops
        """
        raise NotImplementedError()

    ## Base Class Interface ####################################################

    def start_thread(self):
        """If the thread is not already alive start it"""
        if not self.is_alive():
            log.info("Starting %s: %s", self.__class__.__name__, self.name)
            self.start()

    def stop_thread(self):
        """Set the shutdown event"""
        log.info("Stopping %s: %s", self.__class__.__name__, self.name)
        self.shutdown.set()

    def should_stop(self) -> bool:
        """Helper to determine if a thread should shutdown"""
        return self.shutdown.is_set()

    def check_preconditions(self) -> bool:
        """Helper function to check if the thread should shutdown or wait for
        leadership. Returns False if the thread should exit.
        """
        if self.should_stop():
            return False

        while not self.leadership_manager.is_leader():
            log.debug3("Waiting for leadership")
            if self.leadership_manager.wait_for_leadership(timeout=1.0):
                break
            if self.should_stop():
                return False

        return True

    def wait_on_precondition(self, timeout: float) -> bool:
        """Helper function to allow threads to wait for a certain period of
        time only being interrupted for preconditions
        """
        self.shutdown.wait(timeout)
        return self.check_preconditions()
