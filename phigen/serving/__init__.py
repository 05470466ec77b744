# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""Inference runtime: everything between a prompt and a stream of text."""
