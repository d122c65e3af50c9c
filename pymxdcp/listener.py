from abc import ABC, abstractmethod
from typing import List
import logging


class MixerListener(ABC):

    @abstractmethod
    def connected(self):
        pass

    @abstractmethod
    def disconnected(self):
        pass

    def notification_received(self, line: str):
        """Called for every unsolicited NOTIFY line, as soon as it arrives."""
        pass

    def preset_recalled(self, preset_number: int):
        """Called once a recall has completed (and been verified, if requested)."""
        pass

    def error(self, error_message: str):
        """Called when a recall fails or the connection drops with an error."""
        pass


class MultiplexingListener(MixerListener):

    _listeners: List[MixerListener]

    def __init__(self):
        self._listeners = []

    def connected(self):
        for listener in self._listeners:
            listener.connected()

    def disconnected(self):
        for listener in self._listeners:
            listener.disconnected()

    def notification_received(self, line: str):
        for listener in self._listeners:
            listener.notification_received(line)

    def preset_recalled(self, preset_number: int):
        for listener in self._listeners:
            listener.preset_recalled(preset_number)

    def error(self, error_message: str):
        for listener in self._listeners:
            listener.error(error_message)

    def register_listener(self, listener: MixerListener):
        self._listeners.append(listener)

    def unregister_listener(self, listener: MixerListener):
        if listener in self._listeners:
            self._listeners.remove(listener)
        else:
            logging.info("Listener isn't registered")


class LoggingListener(MixerListener):

    def __init__(self, logger=logging):
        self.logger = logger

    def connected(self):
        self.logger.info("Connected")

    def disconnected(self):
        self.logger.info("Disconnected")

    def notification_received(self, line: str):
        self.logger.debug(f"Notification: {line}")

    def preset_recalled(self, preset_number: int):
        self.logger.info(f"Preset {preset_number} recalled")

    def error(self, error_message: str):
        self.logger.error(error_message)
