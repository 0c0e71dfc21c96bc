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

"""Interception pipeline of one statement execution.

Binding calls feed the parameter store. Executing calls enter the call-depth
guard; only a top-level call assembles a request and hands it to the tracer.
The parameter store is cleared when the top-level call completes, whether
the driver call succeeded or not.

Nothing in here raises to the caller, except the driver's own exception,
which is passed through unchanged.
"""

from contextlib import contextmanager

from dbcapture.base import get_client
from dbcapture.instrumentation.calldepth import STATEMENT, call_depth
from dbcapture.instrumentation.params import param_store
from dbcapture.request import assemble_from
from dbcapture.utils.logging import get_logger

logger = get_logger("dbcapture.instrument")


class Invocation(object):
    __slots__ = ("top_level", "tracer", "request", "context", "started")

    def __init__(self, top_level, tracer=None, request=None, context=None, started=False):
        self.top_level = top_level
        self.tracer = tracer
        self.request = request
        self.context = context
        self.started = started

    def __repr__(self):
        return "<Invocation top_level=%s started=%s>" % (self.top_level, self.started)


class StatementInstrumenter(object):
    def __init__(self, tracer=None, guard=None, store=None, key=STATEMENT):
        self._tracer = tracer
        self.guard = call_depth if guard is None else guard
        self.store = param_store if store is None else store
        self.key = key

    @property
    def tracer(self):
        if self._tracer is not None:
            return self._tracer
        client = get_client()
        return client.tracer if client else None

    def bind(self, index, value):
        try:
            self.store.set_param(index, value)
        except Exception:
            logger.debug("Failed to capture bind parameter %r", index, exc_info=True)

    def bind_all(self, values, start=1):
        try:
            self.store.set_params(values, start)
        except Exception:
            logger.debug("Failed to capture bind parameters", exc_info=True)

    def enter(self, resolver, target, parent_context=None) -> Invocation:
        if self.guard.enter(self.key) > 0:
            return Invocation(False)
        try:
            tracer = self.tracer
            if tracer is None or not tracer.is_enabled(parent_context):
                return Invocation(True)
            request = assemble_from(resolver, target, self.store.get_all())
            if request is None or not tracer.should_start(parent_context, request):
                return Invocation(True, tracer, request)
            context = tracer.start(parent_context, request)
            return Invocation(True, tracer, request, context, started=True)
        except Exception:
            logger.debug("Failed to start tracing of %r", target, exc_info=True)
            return Invocation(True)

    def exit(self, invocation, response=None, error=None):
        try:
            if invocation.started:
                invocation.tracer.end(invocation.context, invocation.request, response, error)
        except Exception:
            logger.debug("Failed to end tracing of %r", invocation, exc_info=True)
        finally:
            self.guard.exit(self.key)
            if invocation.top_level:
                self.store.clear()

    def call(self, resolver, target, wrapped, args=(), kwargs=None, parent_context=None):
        """
        Runs `wrapped(*args, **kwargs)` as one intercepted call and returns its
        result.
        """
        invocation = self.enter(resolver, target, parent_context)
        response = error = None
        try:
            response = wrapped(*args, **(kwargs or {}))
            return response
        except Exception as exc:
            error = exc
            raise
        finally:
            self.exit(invocation, response, error)

    @contextmanager
    def execute(self, resolver, target, parent_context=None):
        """
        Context manager variant of `call`, for callers that run the driver
        call themselves. The driver's result is not recorded.
        """
        invocation = self.enter(resolver, target, parent_context)
        error = None
        try:
            yield invocation
        except Exception as exc:
            error = exc
            raise
        finally:
            self.exit(invocation, error=error)


statement_instrumenter = StatementInstrumenter()
