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

"""Provides classes to instrument dbapi2 providers

https://www.python.org/dev/peps/pep-0249/
"""

import wrapt

from dbcapture.instrumentation.packages.base import AbstractInstrumentedModule
from dbcapture.instrumentation.statement import statement_instrumenter
from dbcapture.request import DbInfo
from dbcapture.utils.logging import get_logger

logger = get_logger("dbcapture.instrument")


def is_positional(params) -> bool:
    """
    Only positional parameters can be captured, named parameters given as a
    mapping are passed on without being recorded.
    """
    return isinstance(params, (list, tuple))


def trace_statement(instrumenter, resolve, method, sql, params, captured, statement=None):
    """
    Runs `method` with `sql` and `params` through the statement pipeline.
    Positional `captured` parameters are bound before the call.
    """
    if is_positional(captured):
        instrumenter.bind_all(captured)
    args = (sql,) if params is None else (sql, params)
    return instrumenter.call(resolve, sql if statement is None else statement, method, args)


class CursorProxy(wrapt.ObjectProxy):
    def __init__(self, wrapped, db_info=None, instrumenter=None) -> None:
        super(CursorProxy, self).__init__(wrapped)
        self._self_db_info = db_info
        self._self_instrumenter = instrumenter or statement_instrumenter

    def callproc(self, procname, params=None):
        return self._trace_sql(self.__wrapped__.callproc, procname, params, params, statement="CALL %s" % procname)

    def execute(self, sql, params=None):
        return self._trace_sql(self.__wrapped__.execute, sql, params, params)

    def executemany(self, sql, param_list):
        # only the first parameter set is captured
        first = param_list[0] if is_positional(param_list) and param_list else None
        return self._trace_sql(self.__wrapped__.executemany, sql, param_list, first)

    def __enter__(self):
        entered = self.__wrapped__.__enter__()
        if entered is self.__wrapped__:
            return self
        return self.__class__(entered, self._self_db_info, self._self_instrumenter)

    def _bake_sql(self, sql):
        """
        Method to turn the "sql" argument into a string. Most database backends simply return
        the given object, as it is already a string
        """
        return sql

    def _resolve(self, sql):
        return self._self_db_info, self._bake_sql(sql)

    def _trace_sql(self, method, sql, params, captured, statement=None):
        return trace_statement(self._self_instrumenter, self._resolve, method, sql, params, captured, statement)


class ConnectionProxy(wrapt.ObjectProxy):
    cursor_proxy = CursorProxy

    def __init__(self, wrapped, db_info=None, instrumenter=None) -> None:
        super(ConnectionProxy, self).__init__(wrapped)
        self._self_db_info = db_info
        self._self_instrumenter = instrumenter or statement_instrumenter

    @property
    def db_info(self):
        return self._self_db_info

    def cursor(self, *args, **kwargs):
        return self.cursor_proxy(self.__wrapped__.cursor(*args, **kwargs), self._self_db_info, self._self_instrumenter)

    def __enter__(self):
        entered = self.__wrapped__.__enter__()
        if entered is self.__wrapped__:
            return self
        return self.__class__(entered, self._self_db_info, self._self_instrumenter)


class DbApi2Instrumentation(AbstractInstrumentedModule):
    connection_proxy = ConnectionProxy

    def get_db_info(self, module, method, args, kwargs):
        """
        Derives the connection metadata from the arguments of the connect call
        """
        raise NotImplementedError

    def call(self, module, method, wrapped, instance, args, kwargs):
        connection = wrapped(*args, **kwargs)
        try:
            db_info = self.get_db_info(module, method, args, kwargs)
        except Exception:
            # statements are still traced, only without connection attributes
            logger.debug("Could not derive connection metadata for %s.%s", module, method, exc_info=True)
            db_info = DbInfo()
        return self.connection_proxy(connection, db_info)

    def call_if_enabled(self, module, method, wrapped, instance, args, kwargs):
        # Contrasting to the superclass implementation, we *always* want to
        # return a proxied connection, even if there is no active client yet.
        # Statements are traced as soon as a client exists.
        return self.call(module, method, wrapped, instance, args, kwargs)
