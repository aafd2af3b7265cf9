"""
Classifier adapter; requires TensorFlow, so it is not imported by the package root
"""
