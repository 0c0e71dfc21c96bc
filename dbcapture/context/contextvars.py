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

import contextvars
import threading
from types import MappingProxyType

from dbcapture.context.base import BaseContext

EMPTY_PARAMS = MappingProxyType({})


class ContextVarsContext(BaseContext):
    dbcapture_params_var = contextvars.ContextVar("dbcapture_params_var", default=EMPTY_PARAMS)

    def __init__(self):
        self._depth_vars = {}
        self._lock = threading.Lock()

    def _depth_var(self, key):
        # one ContextVar per call class, created on first use
        var = self._depth_vars.get(key)
        if var is None:
            with self._lock:
                var = self._depth_vars.get(key)
                if var is None:
                    var = contextvars.ContextVar("dbcapture_call_depth_%s" % key, default=0)
                    self._depth_vars[key] = var
        return var

    def get_call_depth(self, key):
        return self._depth_var(key).get()

    def set_call_depth(self, key, depth):
        self._depth_var(key).set(depth)

    def get_params(self):
        return self.dbcapture_params_var.get()

    def set_params(self, params):
        self.dbcapture_params_var.set(MappingProxyType(dict(params)) if params else EMPTY_PARAMS)

    def clear(self):
        for var in list(self._depth_vars.values()):
            var.set(0)
        self.dbcapture_params_var.set(EMPTY_PARAMS)


execution_context = ContextVarsContext()
