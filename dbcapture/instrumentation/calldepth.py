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

"""Suppression of re-entrant interception.

Drivers frequently execute statements from within their own execute methods,
e.g. to look up connection metadata. Each guarded call class keeps a depth
counter scoped to the current execution context, and only the outermost call
(depth 0) is intercepted.
"""

from contextlib import contextmanager

from dbcapture.context import execution_context
from dbcapture.utils.logging import get_logger

logger = get_logger("dbcapture.instrument")

STATEMENT = "statement"


class CallDepthGuard(object):
    def __init__(self, context=None):
        self._context = context or execution_context

    def enter(self, key=STATEMENT) -> int:
        """
        Increment the depth counter of `key` and return the depth *before*
        incrementing. A return value of 0 marks a top-level call.
        """
        depth = self._context.get_call_depth(key)
        self._context.set_call_depth(key, depth + 1)
        return depth

    def exit(self, key=STATEMENT) -> int:
        """
        Decrement the depth counter of `key` and return the depth *after*
        decrementing. A return value of 0 marks the end of the top-level call.
        """
        depth = self._context.get_call_depth(key)
        if depth <= 0:
            logger.debug("Unbalanced exit for guarded call class %s", key)
            self._context.set_call_depth(key, 0)
            return 0
        depth -= 1
        self._context.set_call_depth(key, depth)
        return depth

    def depth(self, key=STATEMENT) -> int:
        return self._context.get_call_depth(key)

    @contextmanager
    def guard(self, key=STATEMENT):
        """
        Context manager yielding True if the wrapped block is the top-level
        call of `key`. The counter is decremented on every exit path.
        """
        top_level = self.enter(key) == 0
        try:
            yield top_level
        finally:
            self.exit(key)


call_depth = CallDepthGuard()
