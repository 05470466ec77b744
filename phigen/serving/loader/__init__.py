# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""Loads model weights and tokenizer from disk."""
