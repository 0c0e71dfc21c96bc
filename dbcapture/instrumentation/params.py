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

from dbcapture.context import execution_context
from dbcapture.utils.logging import get_logger

logger = get_logger("dbcapture.instrument")


class ParameterStore(object):
    """
    Positional bind parameters of the statement currently being prepared in
    this execution context.

    Values are keyed by their 1-based positional index. Binding an index again
    overwrites the previous value. The store is not tied to a statement object:
    it is cleared once, at the end of the outermost execute call.
    """

    def __init__(self, context=None):
        self._context = context or execution_context

    def set_param(self, index, value):
        if isinstance(index, bool) or not isinstance(index, int) or index < 1:
            logger.debug("Ignoring bind parameter with invalid index %r", index)
            return
        params = dict(self._context.get_params())
        params[index] = value
        self._context.set_params(params)

    def set_params(self, values, start=1):
        """
        Bind a sequence of values to consecutive indices, starting at `start`
        """
        params = dict(self._context.get_params())
        for index, value in enumerate(values, start):
            params[index] = value
        self._context.set_params(params)

    def get_all(self):
        """
        Returns a snapshot of the bound parameters. Later changes to the store
        are not reflected in the returned mapping.
        """
        return dict(self._context.get_params())

    def clear(self):
        self._context.set_params(None)

    def __len__(self):
        return len(self._context.get_params())


param_store = ParameterStore()
