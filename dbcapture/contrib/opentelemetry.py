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

"""Bridge to the OpenTelemetry API

Intercepted database calls become OpenTelemetry CLIENT spans. ::

    >>> from dbcapture import Client
    >>> from dbcapture.contrib.opentelemetry import OpenTelemetryTracer
    >>> client = Client(tracer_cls=OpenTelemetryTracer)
"""

from opentelemetry import context as otel_context
from opentelemetry import trace
from opentelemetry.trace import SpanKind
from opentelemetry.trace.status import Status, StatusCode

from dbcapture.attributes import span_name
from dbcapture.traces import Tracer
from dbcapture.utils.logging import get_logger

logger = get_logger("dbcapture.otel")

INSTRUMENTATION_NAME = "dbcapture"


class ActiveSpan(object):
    __slots__ = ("span", "token")

    def __init__(self, span, token):
        self.span = span
        self.token = token


class OpenTelemetryTracer(Tracer):
    def __init__(self, config=None, extractor=None, tracer_provider=None):
        super(OpenTelemetryTracer, self).__init__(config=config, extractor=extractor)
        from dbcapture import VERSION

        self.otel_tracer = trace.get_tracer(INSTRUMENTATION_NAME, VERSION, tracer_provider=tracer_provider)

    def start(self, parent_context, request) -> ActiveSpan:
        attributes = self.extractor.extract(request)
        span = self.otel_tracer.start_span(
            span_name(attributes, self.table_attribute_key),
            context=parent_context,
            kind=SpanKind.CLIENT,
            attributes=dict(attributes),
        )
        # the span stays current while the driver runs, so that spans
        # started by the driver become its children
        token = otel_context.attach(trace.set_span_in_context(span, parent_context))
        return ActiveSpan(span, token)

    def end(self, context, request, response=None, error=None):
        span = context.span
        try:
            if error is not None:
                span.record_exception(error)
                span.set_status(Status(StatusCode.ERROR, "%s: %s" % (type(error).__name__, error)))
        finally:
            otel_context.detach(context.token)
            span.end()
        logger.debug("Ended span %s", getattr(span, "name", span))
