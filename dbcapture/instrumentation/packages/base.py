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

import functools
import os

import wrapt

from dbcapture.base import get_client
from dbcapture.utils.logging import get_logger

logger = get_logger("dbcapture.instrument")


class AbstractInstrumentedModule(object):
    name = None

    instrument_list = [
        # List of (module, method) pairs to instrument. E.g.:
        # ("sqlite3", "connect"),
    ]

    def __init__(self):
        self.originals = {}
        self.instrumented = False

        assert self.name is not None

    def get_instrument_list(self):
        return self.instrument_list

    def is_disabled(self):
        skip_env_var = "SKIP_INSTRUMENT_" + str(self.name.upper())
        if skip_env_var in os.environ:
            logger.debug("Skipping instrumentation of %s. %s is set.", self.name, skip_env_var)
            return True
        client = get_client()
        if client and self.name in (client.config.disable_instrumentations or []):
            logger.debug("Skipping instrumentation of %s. Disabled via DISABLE_INSTRUMENTATIONS.", self.name)
            return True
        return False

    def instrument(self):
        if self.instrumented or self.is_disabled():
            return

        skipped_modules = set()
        instrumented_methods = []

        for module, method in self.get_instrument_list():
            # skip modules we already failed to load
            if module in skipped_modules:
                continue
            try:
                parent, attribute, original = wrapt.resolve_path(module, method)
            except ImportError:
                logger.debug("Skipping instrumentation of %s. Module %s not found", self.name, module)
                skipped_modules.add(module)
                continue
            except AttributeError as ex:
                logger.debug("Skipping instrumentation of %s.%s: %s", module, method, ex)
                continue
            self.originals[(module, method)] = original
            wrapper = wrapt.FunctionWrapper(original, functools.partial(self.call_if_enabled, module, method))
            wrapt.apply_patch(parent, attribute, wrapper)
            instrumented_methods.append((module, method))
        if instrumented_methods:
            logger.debug("Instrumented %s, %s", self.name, ", ".join(".".join(m) for m in instrumented_methods))
        self.instrumented = True

    def uninstrument(self):
        if not self.instrumented or not self.originals:
            self.instrumented = False
            return
        uninstrumented_methods = []
        for module, method in self.get_instrument_list():
            if (module, method) in self.originals:
                parent, attribute, wrapper = wrapt.resolve_path(module, method)
                wrapt.apply_patch(parent, attribute, self.originals[(module, method)])
                uninstrumented_methods.append((module, method))
        if uninstrumented_methods:
            logger.debug("Uninstrumented %s, %s", self.name, ", ".join(".".join(m) for m in uninstrumented_methods))
        self.instrumented = False
        self.originals = {}

    def call_if_enabled(self, module, method, wrapped, instance, args, kwargs):
        client = get_client()
        if not client or not client.is_enabled:
            return wrapped(*args, **kwargs)
        return self.call(module, method, wrapped, instance, args, kwargs)

    def call(self, module, method, wrapped, instance, args, kwargs):
        """
        Wrapped call. This method should gather all necessary data, then call `wrapped`.

        :param module: Name of the wrapped module
        :param method: Name of the wrapped method/function
        :param wrapped: the wrapped method/function object
        :param instance: the wrapped instance
        :param args: arguments to the wrapped method/function
        :param kwargs: keyword arguments to the wrapped method/function
        :return: the result of calling the wrapped method/function
        """
        raise NotImplementedError
