"""
Core building blocks: error hierarchy and shared constants.

Copyright (c) The Amphitheatre Authors. All rights reserved.
"""
