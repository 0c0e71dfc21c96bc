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

import wrapt

from dbcapture.instrumentation.statement import statement_instrumenter


class PreparedStatementProxy(wrapt.ObjectProxy):
    """
    Proxy for prepared-statement shaped objects, i.e. objects that bind
    parameters one by one through `set*(index, value, ...)` methods and run
    the statement through argument-less `execute*()` methods.

    Binding calls record the value under its positional index. Executing
    calls are intercepted as one statement execution. All other attributes
    are passed through.
    """

    def __init__(self, wrapped, resolver, instrumenter=None) -> None:
        super(PreparedStatementProxy, self).__init__(wrapped)
        self._self_resolver = resolver
        self._self_instrumenter = instrumenter or statement_instrumenter

    @classmethod
    def for_statement(cls, wrapped, db_info, sql, instrumenter=None):
        return cls(wrapped, lambda statement: (db_info, sql), instrumenter)

    def __getattr__(self, name):
        attr = getattr(self.__wrapped__, name)
        if name.startswith("_") or not callable(attr):
            return attr
        if name.startswith("set"):
            return functools.partial(self._binding_call, attr)
        if name.startswith("execute"):
            return functools.partial(self._executing_call, attr)
        return attr

    def _binding_call(self, method, *args, **kwargs):
        if len(args) > 1:
            self._self_instrumenter.bind(args[0], args[1])
        return method(*args, **kwargs)

    def _executing_call(self, method, *args, **kwargs):
        if args or kwargs:
            return method(*args, **kwargs)
        return self._self_instrumenter.call(self._self_resolver, self.__wrapped__, method)
