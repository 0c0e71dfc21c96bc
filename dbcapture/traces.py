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

import time
from typing import Optional

from dbcapture.attributes import SqlClientAttributesExtractor, span_name
from dbcapture.conf import constants
from dbcapture.utils.logging import TRACE, get_logger

__all__ = ("Span", "Tracer")

logger = get_logger("dbcapture.traces")


class Span(object):
    """
    Record of one intercepted database call
    """

    __slots__ = ("name", "attributes", "parent_context", "start_time", "end_time", "error", "outcome")

    def __init__(self, name, attributes, parent_context=None, start=None):
        self.name = name
        self.attributes = attributes
        self.parent_context = parent_context
        self.start_time = start if start is not None else time.time()
        self.end_time = None
        self.error = None
        self.outcome = constants.OUTCOME.UNKNOWN

    def end(self, error=None, end=None):
        self.end_time = end if end is not None else time.time()
        self.error = error
        self.outcome = constants.OUTCOME.FAILURE if error is not None else constants.OUTCOME.SUCCESS

    @property
    def duration(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return self.end_time - self.start_time

    @property
    def is_ended(self) -> bool:
        return self.end_time is not None

    def to_dict(self) -> dict:
        result = {
            "name": self.name,
            "attributes": dict(self.attributes),
            "start": self.start_time,
            "duration": self.duration,
            "outcome": self.outcome,
        }
        if self.error is not None:
            result["error"] = {"type": type(self.error).__name__, "message": str(self.error)}
        return result

    def __repr__(self):
        return "<Span %r outcome=%s>" % (self.name, self.outcome)


class Tracer(object):
    """
    Receives the requests of intercepted calls and turns them into spans.

    The base implementation keeps finished spans nowhere, it only logs them.
    Subclasses override `report` to ship spans elsewhere, or override
    `start` and `end` entirely to bridge to another tracing library.
    """

    def __init__(self, config=None, extractor=None):
        self.config = config
        if extractor is None:
            if config is not None:
                extractor = SqlClientAttributesExtractor.from_config(config)
            else:
                extractor = SqlClientAttributesExtractor()
        self.extractor = extractor

    @property
    def table_attribute_key(self):
        return self.extractor.table_attribute_key

    def is_enabled(self, parent_context=None) -> bool:
        return self.config is None or bool(self.config.enabled)

    def should_start(self, parent_context, request) -> bool:
        return True

    def start(self, parent_context, request):
        attributes = self.extractor.extract(request)
        span = Span(span_name(attributes, self.table_attribute_key), attributes, parent_context=parent_context)
        logger.log(TRACE, "Started span %s", span.name)
        return span

    def end(self, context, request, response=None, error=None):
        context.end(error=error)
        self.report(context)

    def report(self, span):
        logger.debug(
            "Finished span %s (%s, %.3fms)",
            span.name,
            span.outcome,
            (span.duration or 0) * 1000,
            extra={"span_attributes": dict(span.attributes)},
        )
