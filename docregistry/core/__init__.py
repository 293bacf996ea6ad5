"""
Core components: tokenizer, converter, router, classifiers and factories.
"""
