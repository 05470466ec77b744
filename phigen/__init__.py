# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
phigen: streamed text generation for the Phi model family.

The package is split the same way the runtime is:
  - model: the Phi transformer itself (the tensor compute provider)
  - serving: tokenizer adapter, KV cache, sampler, stop engine, session
    driver, streaming bridge and the engine facade that ties them together
  - config, logging, runtime, cli: the ambient plumbing around all of that
"""

__version__ = "0.3.0"
