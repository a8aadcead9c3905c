"""acmedns tests"""
