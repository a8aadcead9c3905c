"""acmedns internal implementation"""
