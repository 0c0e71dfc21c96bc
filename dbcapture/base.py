#  BSD 3-Clause License
#
#  Copyright (c) 2019, Elasticsearch BV
#  All rights reserved.
#
#  Redistribution and use in source and binary forms, with or without
#  modification, are permitted provided that the following conditions are met:
#
#  * Redistributions of source code must retain the above copyright notice, this
#    list of conditions and the following disclaimer.
#
#  * Redistributions in binary form must reproduce the above copyright notice,
#    this list of conditions and the following disclaimer in the documentation
#    and/or other materials provided with the distribution.
#
#  * Neither the name of the copyright holder nor the names of its
#    contributors may be used to endorse or promote products derived from
#    this software without specific prior written permission.
#
#  THIS SOFTWARE IS PROVIDED BY THE COPYRIGHT HOLDERS AND CONTRIBUTORS "AS IS"
#  AND ANY EXPRESS OR IMPLIED WARRANTIES, INCLUDING, BUT NOT LIMITED TO, THE
#  IMPLIED WARRANTIES OF MERCHANTABILITY AND FITNESS FOR A PARTICULAR PURPOSE ARE
#  DISCLAIMED. IN NO EVENT SHALL THE COPYRIGHT HOLDER OR CONTRIBUTORS BE LIABLE
#  FOR ANY DIRECT, INDIRECT, INCIDENTAL, SPECIAL, EXEMPLARY, OR CONSEQUENTIAL
#  DAMAGES (INCLUDING, BUT NOT LIMITED TO, PROCUREMENT OF SUBSTITUTE GOODS OR
#  SERVICES; LOSS OF USE, DATA, OR PROFITS; OR BUSINESS INTERRUPTION) HOWEVER
#  CAUSED AND ON ANY THEORY OF LIABILITY, WHETHER IN CONTRACT, STRICT LIABILITY,
#  OR TORT (INCLUDING NEGLIGENCE OR OTHERWISE) ARISING IN ANY WAY OUT OF THE USE
#  OF THIS SOFTWARE, EVEN IF ADVISED OF THE POSSIBILITY OF SUCH DAMAGE.

import threading

from dbcapture.conf import Config
from dbcapture.traces import Tracer
from dbcapture.utils.logging import get_logger

__all__ = ("Client",)

CLIENT_SINGLETON = None


class Client(object):
    """
    The dbcapture client. It holds the configuration and the tracer that
    receives intercepted database calls.

    Will read configuration from ``DBCAPTURE_*`` environment variables if
    available. ::

    >>> from dbcapture import Client

    >>> # Read configuration from environment
    >>> client = Client()

    >>> # Configure the client manually
    >>> client = Client(capture_parameters=True, table_attribute_key="db.collection.name")

    >>> # Use a custom tracer
    >>> client = Client(tracer_cls=MyTracer)
    """

    logger = get_logger("dbcapture")

    def __init__(self, config=None, tracer_cls=None, **inline):
        cls = self.__class__
        self.logger = get_logger("%s.%s" % (cls.__module__, cls.__name__))
        self.error_logger = get_logger("dbcapture.errors")
        self._lock = threading.Lock()

        config = Config(config, inline_dict=inline)
        if config.errors:
            for msg in config.errors.values():
                self.error_logger.error(msg)
        self.config = config

        tracer_cls = tracer_cls or Tracer
        self.tracer = tracer_cls(config=self.config)

        if self.config.enabled and self.config.instrument:
            from dbcapture.instrumentation.control import instrument

            instrument()
        elif not self.config.enabled:
            self.logger.debug("dbcapture is disabled, database calls will not be traced")

        # Save this Client object as the global CLIENT_SINGLETON
        set_client(self)

    @property
    def is_enabled(self):
        return bool(self.config.enabled)

    def close(self):
        global CLIENT_SINGLETON
        with self._lock:
            if CLIENT_SINGLETON is self:
                CLIENT_SINGLETON = None


def get_client():
    return CLIENT_SINGLETON


def set_client(client):
    global CLIENT_SINGLETON
    if CLIENT_SINGLETON:
        logger = get_logger("dbcapture")
        logger.warning("Client object is being set more than once", stack_info=True)
    CLIENT_SINGLETON = client
