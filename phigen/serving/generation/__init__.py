# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""Generation options and the logit-transform sampling pipeline."""
